from .anthropic_model import AnthropicDiagramModel, extract_drawio_xml, validate_drawio_xml
from .base import DiagramModel

__all__ = [
    "AnthropicDiagramModel",
    "DiagramModel",
    "extract_drawio_xml",
    "validate_drawio_xml",
]
