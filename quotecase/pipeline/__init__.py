from quotecase.pipeline.correspondence import extract_plain_text
from quotecase.pipeline.flow_classifier import FlowClassification, classify_flow
from quotecase.pipeline.gap_analyzer import completeness_pct, mandatory_keys
from quotecase.pipeline.hs_resolver import HsCodeResolver, HsResolution

__all__ = [
    "extract_plain_text",
    "classify_flow",
    "FlowClassification",
    "mandatory_keys",
    "completeness_pct",
    "HsCodeResolver",
    "HsResolution",
]
