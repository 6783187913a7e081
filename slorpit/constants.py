# Header versions. Object streams and xref streams need 1.5; the classic
# xref table layout is written as 1.4.
PDF_VERSION_OBJSTM = "1.5"
PDF_VERSION_TABLE = "1.4"
PDF_HEADER_PREFIX = b"%PDF-"
PDF_BINARY_MARKER = b"%\xe2\xe3\xcf\xd3"
PDF_EOF_MARKER = b"%%EOF"
STARTXREF_KEYWORD = b"startxref"

# Reserved names
CATALOG_KEY = "SlorpitCatalog"
CATALOG_SUBTYPE = "SlorpitArchive"
CATALOG_FORMAT_VERSION = "1.0"

# Filters
FILTER_FLATE = "FlateDecode"

# zlib level used for every stream (maximum ratio)
COMPRESSION_LEVEL = 9

# Objects packed into one object stream before a new group is started
DEFAULT_MAX_OBJECTS_PER_GROUP = 200

# Bytes read per call when streaming an input file into the compressor
READ_CHUNK_SIZE = 1_048_576  # 1 MiB

# How far back from EOF to look for "startxref"
TRAILER_SCAN_BYTES = 4096

# Visual listing page geometry (US Letter, points)
PAGE_WIDTH = 612
PAGE_HEIGHT = 792
LISTING_FONT = "Courier"
LISTING_FONT_RESOURCE = "F1"
LISTING_TITLE = "SLORPIT PDF Archive"

PRODUCER = "slorpit"
