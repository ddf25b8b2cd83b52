import zipfile


# Stream copy
DEFAULT_BUFFER_SIZE = 4096  # 4 KiB

# Compression method names accepted by the CLI and PackRequest
COMPRESSION_METHODS = {
    "store": zipfile.ZIP_STORED,
    "deflate": zipfile.ZIP_DEFLATED,
    "bzip2": zipfile.ZIP_BZIP2,
    "lzma": zipfile.ZIP_LZMA,
}
DEFAULT_COMPRESSION = "deflate"

# ZIP extra field header ids
EXTRA_EXT_TIMESTAMP = 0x5455  # "UT" extended timestamp (info-zip)
EXTRA_ENCRYPTION = 0x7A74     # "tz" ziptree encrypted entry descriptor

ENCRYPTION_VERSION = 1

# Archive header stored in the ZIP comment of encrypted archives
HEADER_MAGIC = b"ZIPTREE\x00"  # 8 bytes: "ZIPTREE\0"
VERSION_MAJOR = 1
VERSION_MINOR = 0
KDF_ARGON2ID = 1

# Encrypted frame layout
FRAME_SYNC = b"ZTF\x01"
FRAME_FLAG_FINAL = 1 << 0
FRAME_SIZE = 65536  # compressed bytes per frame, 64 KiB

# Argon2id defaults for new archives
ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4

# Upper bounds accepted when reading a header
ARGON_MAX_TIME_COST = 64
ARGON_MAX_MEMORY_COST_KIB = 4 * 1024 * 1024  # 4 GiB
ARGON_MAX_PARALLELISM = 64

# ZIP DOS timestamps cover 1980-01-01 .. 2107-12-31
DOS_MIN_YEAR = 1980
DOS_MAX_YEAR = 2107
