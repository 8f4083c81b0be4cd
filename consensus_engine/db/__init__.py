# Database layer: async engine, session factory and ORM models.
