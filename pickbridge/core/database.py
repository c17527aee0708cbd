# pickbridge/core/database.py
from prisma import Prisma

# Global Prisma instance, connected in the app lifespan
prisma = Prisma()
