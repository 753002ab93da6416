from .drawio_cli import DiagramConverter, DrawioCliConverter

__all__ = ["DiagramConverter", "DrawioCliConverter"]
