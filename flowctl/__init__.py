# flowctl package
# Deterministic conversation flow execution controller with a forkable,
# branch-aware execution history.
#
# Sub-packages:
#   - spec: flow model types, loader, compiler
#   - validator: structured validation errors
#   - config: runtime configuration registry
#   - runtime: controller, history tree, branches, run service
#   - api: FastAPI surface for the turn API
#   - tools: command-line utilities

__version__ = "0.4.0"
