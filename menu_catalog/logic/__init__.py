"""Business logic: position index, container resolution, ordering engine,
transaction coordination, catalog reads and the agent tool registry.

Repository modules (``repository_*``) hold the SQL; nothing here imports
FastAPI.
"""
