"""
AI layer: LLM gateway, prompt templates, output schemas, the fingerprint
cache and the agent orchestrator.
"""
