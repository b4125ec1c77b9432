from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.templating import Jinja2Templates

from app.config import settings
from app.errors import install_error_handlers
from app.logging_config import configure_logging
from app.routers import auth, health, invoices, proposals, public, rates
from app.security.headers import install_security_headers
from app.security.sessions import install_auth_session_middleware

configure_logging(settings.log_level, settings.log_json)

app = FastAPI(title='Walla Walla Travel Pricing')

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

install_error_handlers(app)
install_auth_session_middleware(app)
install_security_headers(app)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(rates.router)
app.include_router(proposals.router)
app.include_router(invoices.router)
app.include_router(public.router)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
