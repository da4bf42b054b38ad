import logging

from fastapi import FastAPI

from api import adaptation, admin, health
from api.errors import register_exception_handlers

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Adaptation Decision Engine")

# =====================================================
# 🏥 HEALTH
# =====================================================
app.include_router(health.router)

# ======================================================
# 🧠 ADAPTATION ENGINE
# ======================================================
app.include_router(adaptation.router)

# ======================================================
# 🧪 ADMIN (versions de règles / A-B tests)
# ======================================================
app.include_router(admin.router)

# ======================================================
# ❌ HANDLERS D'ERREURS
# ======================================================
register_exception_handlers(app)


@app.get("/")
def root():
    return {"status": "ok"}
