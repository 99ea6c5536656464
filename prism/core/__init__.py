"""Pipeline core: discovery, prompts, parsers, writers and the orchestrator."""
