"""
Chat handlers picked up by `pipeline.load_handlers_from_env("handlers")`.

Every PipelineHandler subclass defined in a module here is loaded; set
HANDLER_NAME to expose {HANDLER_NAME}_ENABLED and {HANDLER_NAME}_PRIORITY.
"""
