"""Recipe AI - Structured Recommendation Core.

This service turns a health concern into a multi-step essential-oil recipe
by orchestrating LLM calls:
- Prompt documents (YAML templates, model config, output schema)
- Parallel per-property research with partial-failure tolerance
- Incremental streaming of structured results
"""

__version__ = "0.1.0"
