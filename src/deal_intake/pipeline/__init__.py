"""
Deal intake pipeline components: normalization, unwrapping, extraction,
conflict detection and orchestration.
"""

from .assembler import RecordAssembler, scrub_role_groups
from .extractor import RuleBasedExtractor, extract, get_default_extractor
from .llm_extractor import LLMExtraction, LLMExtractor
from .merger import MergeOutcome, apply_overrides, detect_conflicts
from .normalizer import normalize_lines, normalize_text
from .pipeline import IntakePipeline
from .unwrapper import ForwardChain, ForwardHeader, unwrap_forward_chain

__all__ = [
    'RecordAssembler',
    'scrub_role_groups',
    'RuleBasedExtractor',
    'extract',
    'get_default_extractor',
    'LLMExtraction',
    'LLMExtractor',
    'MergeOutcome',
    'apply_overrides',
    'detect_conflicts',
    'normalize_lines',
    'normalize_text',
    'IntakePipeline',
    'ForwardChain',
    'ForwardHeader',
    'unwrap_forward_chain',
]
