from pydantic import BaseModel, Field, field_validator

from shared.constants import (
    DEFAULT_CACHE_SIZE,
    DEFAULT_CONTOUR_BUFFER_PX,
    DEFAULT_CONTOUR_INTERVAL,
    DEFAULT_ENCODING,
    DEFAULT_MAXZOOM,
    DEFAULT_MULTIPLIER,
    DEFAULT_OVERZOOM,
    DEFAULT_SUBSAMPLE_BELOW,
    DEFAULT_TIMEOUT_MS,
    MAJOR_INTERVAL_FACTOR,
    Encoding,
)

_URL_PLACEHOLDERS = ('{z}', '{x}', '{y}')


class DemSourceSettings(BaseModel):
    """Where DEM tiles come from and how they are cached and decoded."""

    model_config = {'extra': 'ignore', 'frozen': True}

    # Шаблон URL с плейсхолдерами {z}, {x}, {y}
    url: str
    encoding: Encoding = DEFAULT_ENCODING
    maxzoom: int = Field(default=DEFAULT_MAXZOOM, ge=0)
    cache_size: int = Field(default=DEFAULT_CACHE_SIZE, ge=1)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    # Декодирование и контуринг в отдельном процессе
    worker: bool = False
    # Воркер просит основной процесс декодировать картинки
    decode_images_on_main: bool = False

    @field_validator('url')
    @classmethod
    def _check_placeholders(cls, v: str) -> str:
        missing = [p for p in _URL_PLACEHOLDERS if p not in v]
        if missing:
            msg = f'url template is missing placeholders: {", ".join(missing)}'
            raise ValueError(msg)
        return v

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


class HeightTileOptions(BaseModel):
    """Options of the virtual-tile pipeline."""

    model_config = {'extra': 'ignore', 'frozen': True}

    overzoom: int = Field(default=DEFAULT_OVERZOOM, ge=0)
    # Множитель высот (например, метры -> футы)
    multiplier: float = DEFAULT_MULTIPLIER
    subsample_below: int = Field(default=DEFAULT_SUBSAMPLE_BELOW, ge=1)


class ContourOptions(HeightTileOptions):
    """Options of a contour tile request."""

    interval: float = Field(default=DEFAULT_CONTOUR_INTERVAL, gt=0)
    major_interval: float | None = Field(default=None, gt=0)
    buffer_px: int = Field(default=DEFAULT_CONTOUR_BUFFER_PX, ge=0)

    @property
    def major(self) -> float:
        """Major contour interval, five minor intervals unless set."""
        if self.major_interval is None:
            return self.interval * MAJOR_INTERVAL_FACTOR
        return self.major_interval


class Profile(BaseModel):
    """A TOML profile: the DEM source plus contour options."""

    model_config = {'extra': 'ignore'}

    source: DemSourceSettings
    contours: ContourOptions = ContourOptions()
