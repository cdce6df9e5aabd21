# Possible image sizes stored, keyed by size tag, valued by max side in pixels.
# XXL is reserved for the full-size rendition.
IMAGE_SIZE = {
    "XXS": 32,
    "XS": 64,
    "S": 128,
    "M": 256,
    "ML": 512,
    "L": 1024,
    "XL": 2048,
    "XXL": 4096,
}
FULL_SIZE = "XXL"

SUPPORTED_EXTENSIONS = {".bmp", ".gif", ".png", ".jpg", ".jpeg", ".heic", ".heif", ".ico", ".webp"}
# Camera-native formats that must be transcoded before anything else happens
LEGACY_EXTENSIONS = {".heic", ".heif"}
LEGACY_TARGET_EXTENSION = ".jpg"

ALTERNATE_EXTENSION = ".webp"

PIL_FORMATS = {
    ".bmp": "BMP",
    ".gif": "GIF",
    ".png": "PNG",
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".ico": "ICO",
    ".webp": "WEBP",
}

DEFAULT_IMAGE_FOLDER = "images"
MAX_FILE_NAME_ATTEMPTS = 100

HERO_BANNER_LABEL = "hero-banner"
SEASONAL_LABEL = "seasonal"

DELETE_OPERATION = "delete-image"
