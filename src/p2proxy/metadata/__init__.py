"""p2 metadata extraction and rewriting."""

from .extractor import AttributeExtractor
from .rewriter import XmlMetadataRewriter

__all__ = ["AttributeExtractor", "XmlMetadataRewriter"]
