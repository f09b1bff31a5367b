"""Exception types raised by seg_pipeline."""


class ConfigurationError(ValueError):
    """Contradictory or unsatisfiable transform / pipeline configuration."""


class StoreError(RuntimeError):
    """The record store cannot be used."""


class StoreOpenError(StoreError):
    """The record store path does not match the requested open mode."""
