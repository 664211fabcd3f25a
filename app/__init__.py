# =============================================================================
# app/ - Application Package
# =============================================================================
# This package holds the application shell:
# - main.py: Command-line entry point for a discovery run
# - config.py: Environment variable loading and settings
# - exceptions.py: Error taxonomy shared by every layer
# - logging_config.py: Root logger setup
#
# The app layer is thin - it parses arguments and delegates to core/.
# =============================================================================
