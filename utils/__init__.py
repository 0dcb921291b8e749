# Utils package - logging, configuration, scheduling and device-side helpers
