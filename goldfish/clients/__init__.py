from .canvas_client import CanvasClient
from .classroom_client import ClassroomClient
from .ustep_client import UstepClient

__all__ = ["CanvasClient", "ClassroomClient", "UstepClient", "build_clients"]


def build_clients(config_data: dict):
    """Factory: (canvas, classroom, ustep) clients from the config sections."""
    timeout = (config_data.get("http") or {}).get("timeout")
    canvas_cfg = config_data.get("canvas") or {}
    classroom_cfg = config_data.get("classroom") or {}
    ustep_cfg = config_data.get("ustep") or {}

    canvas = CanvasClient(
        canvas_cfg.get("base_url"),
        fallback_token=canvas_cfg.get("api_token"),
        timeout=timeout,
    )
    classroom = ClassroomClient(
        course_page_size=int(classroom_cfg.get("course_page_size", 20)),
        coursework_page_size=int(classroom_cfg.get("coursework_page_size", 100)),
        timeout=timeout,
    )
    ustep_kwargs = {key: ustep_cfg[key] for key in ("base_url", "service") if ustep_cfg.get(key)}
    ustep = UstepClient(**ustep_kwargs, timeout=timeout)
    return canvas, classroom, ustep
