"""
JS Recon Scanner - Web Interface
FastAPI backend driving the scan coordinator for browser-like tabs
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# Get project root directory
PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Add src directory to path for imports
sys.path.insert(0, str(PROJECT_ROOT / 'src'))

from fastapi import FastAPI, HTTPException, BackgroundTasks
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import uvicorn

from content_gatherer import HttpPageProvider
from rule_catalog import rule_descriptions
from scan_coordinator import ConsoleNotifier, STATUS_NOT_SCANNABLE
from settings import build_coordinator, load_settings
from utils import is_scannable_url

DEFAULT_TAB = "api"

settings = load_settings(PROJECT_ROOT / "config.json")
page_provider = HttpPageProvider(timeout=settings.fetch_timeout)
coordinator = build_coordinator(settings, page_provider, notifier=ConsoleNotifier())


@asynccontextmanager
async def lifespan(app):
    yield
    coordinator.worker.shutdown()


app = FastAPI(
    title="JS Recon Scanner",
    description="Scan web pages for secrets, endpoints, subdomains and DOM XSS sinks",
    version="1.0.0",
    lifespan=lifespan,
)


class ScanRequest(BaseModel):
    url: str
    tab_id: Optional[str] = None
    html: Optional[str] = None
    force: bool = False


class RescanRequest(BaseModel):
    tab_id: str = DEFAULT_TAB
    url: Optional[str] = None


def _status_payload(tab_id, url, status):
    """Page status for JSON output (findings without source content)"""
    result = status.get("result")
    return {
        "tab_id": tab_id,
        "url": url,
        "status": status["status"],
        "count": status["count"],
        "message": status.get("message"),
        "warning": status.get("warning"),
        "findings": result.to_dict(include_content=False)["results"] if result else None,
        "secrets": result.secret_findings(rule_descriptions()) if result else [],
    }


@app.post("/scan", response_class=JSONResponse)
async def start_scan(req: ScanRequest, background_tasks: BackgroundTasks):
    """Start scanning a page (runs in background, returns the current status)"""
    tab_id = req.tab_id or DEFAULT_TAB
    url = req.url.strip()

    if not is_scannable_url(url):
        return _status_payload(tab_id, url, {"status": STATUS_NOT_SCANNABLE, "count": 0})

    if req.html is not None:
        page_provider.set_html(tab_id, url, req.html)

    await coordinator.on_loading_start(tab_id, url)
    if req.force:
        background_tasks.add_task(coordinator.force_rescan, tab_id, url)
    else:
        background_tasks.add_task(coordinator.on_navigation_complete, tab_id, url)

    return _status_payload(tab_id, url, coordinator.get_page_status(tab_id, url))


@app.get("/status")
async def get_status(url: str, tab_id: str = DEFAULT_TAB):
    """Get scan status and findings for a page"""
    return _status_payload(tab_id, url, coordinator.get_page_status(tab_id, url))


@app.get("/export")
async def export_findings(url: str, tab_id: str = DEFAULT_TAB):
    """Export the completed result of a page as flat JSON"""
    document = coordinator.export(tab_id, url)
    if document is None:
        raise HTTPException(status_code=404, detail="No completed scan for this page. Run a scan first.")
    return document


@app.post("/tabs/{tab_id}/close")
async def close_tab(tab_id: str):
    """Cancel any running scan of the tab and purge its results"""
    await coordinator.on_tab_closed(tab_id)
    page_provider.forget(tab_id)
    return {"status": "closed", "tab_id": tab_id}


@app.post("/rescan", response_class=JSONResponse)
async def rescan(req: RescanRequest, background_tasks: BackgroundTasks):
    """Force a rescan of the tab's page, ignoring cached results"""
    url = req.url or coordinator.current_url(req.tab_id)
    if not url:
        raise HTTPException(status_code=404, detail="Unknown tab. Start a scan first.")
    if not is_scannable_url(url):
        return _status_payload(req.tab_id, url, {"status": STATUS_NOT_SCANNABLE, "count": 0})

    background_tasks.add_task(coordinator.force_rescan, req.tab_id, url)
    return {"status": "scanning", "tab_id": req.tab_id, "url": url}


if __name__ == "__main__":
    print("\n" + "="*50)
    print("JS Recon Scanner - Web Interface")
    print("="*50)
    print(f"\nProject root: {PROJECT_ROOT}")
    print("\nStarting server at http://localhost:8000\n")

    uvicorn.run(app, host="0.0.0.0", port=8000)
