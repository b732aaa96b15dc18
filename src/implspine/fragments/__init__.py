"""Fragment sources: decode rustdoc implementor scripts and load them into a broker.

Modules
-------
parser   parse_fragment / parse_payload_text / marker_from_path
loader   load_fragments -- asyncio, completion-order delivery
"""

from implspine.fragments.loader import LoadReport, load_fragments, load_fragments_sync
from implspine.fragments.parser import marker_from_path, parse_fragment, parse_payload_text

__all__ = [
    "LoadReport",
    "load_fragments",
    "load_fragments_sync",
    "marker_from_path",
    "parse_fragment",
    "parse_payload_text",
]
