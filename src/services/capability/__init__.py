from .probe_cache import CapabilityProbeCache, CapabilityProbeRecord

__all__ = ["CapabilityProbeCache", "CapabilityProbeRecord"]
