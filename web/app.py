from __future__ import annotations

import base64
import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.datastructures import UploadFile as FormFile

# allow importing the parser from repo root
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from statement_combiner import combine_statement, placeholder_to_json  # noqa: E402
from statement_parser import (  # noqa: E402
    DEFAULT_FEE_LABELS,
    DEFAULT_SKIP_PAGES,
    ExtractionError,
    build_report,
    extract_text,
    report_to_json,
)


APP_DIR = Path(__file__).resolve().parent
FRONTEND_DIR = APP_DIR / "frontend"
CONFIG_PATH = APP_DIR / "config.json"
MAIN_FIELD = "main"
MISSING_MAIN_MESSAGE = f'Main PDF (field name "{MAIN_FIELD}") is required'

logger = logging.getLogger("statement_web")


def load_config() -> dict:
    if not CONFIG_PATH.exists():
        raise RuntimeError(f"Missing config file: {CONFIG_PATH}")
    return json.loads(CONFIG_PATH.read_text(encoding="utf-8"))


def report_options(cfg: dict) -> Tuple[int, Tuple[str, ...]]:
    report_cfg = cfg.get("report", {})
    skip_pages = int(report_cfg.get("skip_leading_pages", DEFAULT_SKIP_PAGES))
    fee_labels = tuple(
        str(label).strip().lower() for label in report_cfg.get("fee_labels", DEFAULT_FEE_LABELS)
    )
    return skip_pages, fee_labels


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def store_upload(file: FormFile, upload_dir: Path) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    safe_name = f"{stamp}_{uuid.uuid4().hex[:8]}_{os.path.basename(file.filename or 'upload.pdf')}"
    stored_path = upload_dir / safe_name

    with stored_path.open("wb") as out:
        while True:
            chunk = await file.read(1024 * 1024)
            if not chunk:
                break
            out.write(chunk)
    return stored_path


def cleanup_uploads(paths: Iterable[Path]) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove uploaded file %s: %s", path, exc)


def create_app(cfg: Optional[dict] = None) -> FastAPI:
    if cfg is None:
        cfg = load_config()

    upload_dir = Path(cfg.get("storage", {}).get("upload_dir", "web/data/uploads"))
    if not upload_dir.is_absolute():
        upload_dir = REPO_ROOT / upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)

    skip_pages, fee_labels = report_options(cfg)

    app = FastAPI(title="Statement Receipt Matcher API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.get("server", {}).get("cors_origins", ["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> dict:
        return {"ok": True}

    @app.post("/api/analyze")
    async def analyze_statement(main: Optional[UploadFile] = File(default=None)):
        if main is None:
            return error_response(400, MISSING_MAIN_MESSAGE)

        stored: List[Path] = []
        try:
            stored_path = await store_upload(main, upload_dir)
            stored.append(stored_path)
            full_text = extract_text(stored_path.read_bytes())
            report = build_report(full_text, skip_pages=skip_pages, fee_labels=fee_labels)
        except ExtractionError as e:
            logger.error("Analyze failed for %s: %s", main.filename, e)
            return error_response(500, str(e))
        finally:
            cleanup_uploads(stored)

        return report_to_json(report)

    @app.post("/api/combine")
    async def combine_statement_with_receipts(request: Request):
        async with request.form() as form:
            parts = [(key, value) for key, value in form.multi_items() if isinstance(value, FormFile)]
            main_parts = [value for key, value in parts if key == MAIN_FIELD]
            receipt_parts = [value for key, value in parts if key != MAIN_FIELD]
            if not main_parts:
                return error_response(400, MISSING_MAIN_MESSAGE)

            stored: List[Path] = []
            try:
                main_path = await store_upload(main_parts[0], upload_dir)
                stored.append(main_path)
                receipts: List[Tuple[str, Path]] = []
                for part in receipt_parts:
                    receipt_path = await store_upload(part, upload_dir)
                    stored.append(receipt_path)
                    receipts.append((part.filename or receipt_path.name, receipt_path))

                result = combine_statement(
                    main_path.read_bytes(),
                    [(name, path.read_bytes()) for name, path in receipts],
                    skip_pages=skip_pages,
                    fee_labels=fee_labels,
                )
            except Exception as e:
                logger.exception("Combine failed for %s", main_parts[0].filename)
                return error_response(500, str(e))
            finally:
                cleanup_uploads(stored)

        return {
            "pdf": base64.b64encode(result.pdf_bytes).decode("ascii"),
            "missingPlaceholders": [placeholder_to_json(p) for p in result.placeholders],
        }

    @app.get("/", include_in_schema=False)
    def serve_index() -> FileResponse:
        index_file = FRONTEND_DIR / "index.html"
        if not index_file.exists():
            raise HTTPException(status_code=404, detail="frontend index not found")
        return FileResponse(path=str(index_file), media_type="text/html")

    @app.get("/{asset_path:path}", include_in_schema=False)
    def serve_frontend_assets(asset_path: str) -> FileResponse:
        if asset_path.startswith("api/"):
            raise HTTPException(status_code=404, detail="not found")

        root = FRONTEND_DIR.resolve()
        candidate = (FRONTEND_DIR / asset_path).resolve()
        if root not in candidate.parents and candidate != root:
            raise HTTPException(status_code=404, detail="not found")

        if candidate.is_file():
            return FileResponse(path=str(candidate))

        index_file = FRONTEND_DIR / "index.html"
        if index_file.exists():
            return FileResponse(path=str(index_file), media_type="text/html")
        raise HTTPException(status_code=404, detail="frontend asset not found")

    return app


app = create_app()
