def run_discovery(*args, **kwargs):
    from app.discovery.orchestrator import run_discovery as _run_discovery

    return _run_discovery(*args, **kwargs)


def build_discoverers(*args, **kwargs):
    from app.discovery.registry import build_discoverers as _build_discoverers

    return _build_discoverers(*args, **kwargs)


__all__ = ["run_discovery", "build_discoverers"]
