"""Constants shared by the sync engines."""

DEFAULT_BOARD_TITLE = "Imported"
DEFAULT_CATEGORY_TITLE = "Unfiled"

FLATTEN_NOTE_PREFIX = "Imported from path: "
NOTE_PATH_SEPARATOR = " / "

# A bookmark deeper than board / category keeps its full folder path in a note.
MAX_MAPPED_DEPTH = 2
