"""Wire protocol models, schemas and transport."""
