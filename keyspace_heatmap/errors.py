class HeatmapError(Exception):
    pass


class ConfigurationError(HeatmapError):
    """Invalid topology or scan configuration; aborts a scan before it starts."""
