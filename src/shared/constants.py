from enum import Enum


class Encoding(str, Enum):
    TERRARIUM = 'terrarium'
    MAPBOX = 'mapbox'
    RAW16 = 'raw16'
    RAW32 = 'raw32'


# Кодировки, которые приходят в виде PNG/WebP картинок
IMAGE_ENCODINGS = frozenset({Encoding.TERRARIUM, Encoding.MAPBOX})

# Terrarium: elevation = R*256 + G + B/256 - 32768
TERRARIUM_OFFSET_M = 32768.0

# Mapbox Terrain-RGB: elevation = -10000 + (R*65536 + G*256 + B) * 0.1
MAPBOX_OFFSET_M = -10000.0
MAPBOX_STEP_M = 0.1

# Заголовок raw16/raw32: uint16 width + uint16 height (little-endian)
RAW_HEADER_FORMAT = '<HH'
RAW_HEADER_SIZE = 4

# --- DEM source defaults
DEFAULT_ENCODING = Encoding.TERRARIUM
DEFAULT_MAXZOOM = 12
DEFAULT_CACHE_SIZE = 100
DEFAULT_TIMEOUT_MS = 10_000

# --- Height tile pipeline defaults
DEFAULT_OVERZOOM = 0
DEFAULT_MULTIPLIER = 1.0
# Минимальная ширина виртуального тайла перед контурингом (px)
DEFAULT_SUBSAMPLE_BELOW = 100
# Припуск при материализации промежуточных сеток (px)
MATERIALIZE_BUFFER_PX = 2
# Припуск финальной сетки, из которой строятся изолинии (px)
FINAL_BUFFER_PX = 1

# --- Contours
DEFAULT_CONTOUR_INTERVAL = 10.0
MAJOR_INTERVAL_FACTOR = 5
DEFAULT_CONTOUR_BUFFER_PX = 1

# --- Hillshade (Horn)
HILLSHADE_AZIMUTH_DEG = 315.0
HILLSHADE_ALTITUDE_DEG = 45.0
HILLSHADE_EXAGGERATION = 1.0
EARTH_CIRCUMFERENCE_M = 40075016.686

# --- HTTP
HTTP_OK = 200
HTTP_USER_AGENT = 'dem-contours/0.1'

# --- Worker process / actor protocol
WORKER_PROCESS_NAME = 'dem-worker'
WORKER_JOIN_TIMEOUT_S = 5.0
CHANNEL_POLL_INTERVAL_S = 0.05
# Буферы от этого размера передаются через SharedMemory, а не копируются в pipe
TRANSFER_SHM_MIN_BYTES = 4 * 1024 * 1024

MSG_REQUEST = 'request'
MSG_RESPONSE = 'response'
MSG_ERROR = 'error'
MSG_CANCEL = 'cancel'

# --- Timing categories
TIMING_MAIN = 'main'
TIMING_FETCH = 'fetch'
TIMING_DECODE = 'decode'
TIMING_ISOLINE = 'isoline'

OUTCOME_OK = 'ok'
OUTCOME_ERROR = 'error'
OUTCOME_CANCELLED = 'cancelled'
OUTCOME_TIMEOUT = 'timeout'

# --- Logging
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
