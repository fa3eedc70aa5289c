"""Inpaint Studio - mask authoring and inpainting workflow."""

__version__ = "0.1.0"
