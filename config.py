import os

# Configuración de la base de datos (SQLite por defecto, PostgreSQL en producción)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rentacar.db")

# Configuración de autenticación
SECRET_KEY = os.getenv("SECRET_KEY", "cambia_esta_clave_secreta")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# "development" expone el detalle de los errores internos
ENTORNO = os.getenv("ENTORNO", "production")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

# Cliente con respaldo local
API_URL = os.getenv("RENTACAR_API_URL", "http://localhost:8000")
CLIENTE_TIMEOUT = float(os.getenv("RENTACAR_CLIENTE_TIMEOUT", 15))
CACHE_LOCAL = os.getenv("RENTACAR_CACHE")

IMPUESTO_FACTURA = 0.16
