import json
import argparse
import asyncio
import time
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from loguru import logger
from config import settings

from priorart.errors import ServiceUnavailable
from priorart.llm import get_llm_service
from priorart.logging_setup import configure_logging
from priorart.pipeline import SearchPipeline
from priorart.search_clients.factory import SearchClientFactory


def run_search(invention_path: Path, output_dir: Path, key_features: Optional[str] = None) -> dict:
    """
    对单个交底文件同步执行完整检索，结果写入 output_dir/<文件名>.json
    """
    name = invention_path.stem
    invention_text = invention_path.read_text(encoding="utf-8").strip()
    if not invention_text:
        return {"status": "failed", "name": name, "error": "Invention text is empty"}

    llm = get_llm_service()
    client = SearchClientFactory.get_client(settings.SEARCH_PROVIDER)
    if not llm.configured or not client.configured:
        raise ServiceUnavailable("LLM_API_KEY and SERPAPI_KEY must both be configured")

    pipeline = SearchPipeline(llm, client)
    started = time.time()
    result = asyncio.run(
        pipeline.run(
            invention_text,
            provided_key_features=key_features,
            progress=lambda value: logger.debug(f"[{name}] progress {value}"),
            job_id=name,
        )
    )

    payload = result.to_dict()
    payload["processingTime"] = int((time.time() - started) * 1000)
    output_path = output_dir / f"{name}.json"
    output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return {"status": "success", "name": name, "output": str(output_path)}


def main():
    parser = argparse.ArgumentParser(description="Prior Art Search Pipeline")
    parser.add_argument("--file", type=str, nargs="+", help="Invention disclosure text file(s)")
    parser.add_argument("--key-features", type=str, help="Optional text file with pre-written key features")
    parser.add_argument("--output", type=str, help="Output directory (default: settings.OUTPUT_DIR)")
    parser.add_argument("--workers", type=int, default=1, help="Number of concurrent workers (default: 1)")

    args = parser.parse_args()
    configure_logging(settings.LOG_LEVEL)

    files = []
    for item in args.file or []:
        path = Path(item)
        if path.exists():
            files.append(path)
        else:
            logger.error(f"File not found: {item}")

    if not files:
        logger.warning("No invention files provided. Usage examples:")
        logger.warning("  python main.py --file invention.txt")
        logger.warning("  python main.py --file a.txt b.txt --workers 2")
        return

    key_features = None
    if args.key_features:
        key_features = Path(args.key_features).read_text(encoding="utf-8")

    output_dir = Path(args.output) if args.output else settings.OUTPUT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Total inventions to process: {len(files)}")
    results = []
    start_time = time.time()

    with ThreadPoolExecutor(max_workers=args.workers) as executor:
        future_to_name = {executor.submit(run_search, f, output_dir, key_features): f.stem for f in files}

        for future in as_completed(future_to_name):
            name = future_to_name[future]
            try:
                res = future.result()
                results.append(res)
                if res["status"] == "success":
                    logger.success(f"[{name}] FINISHED -> {res['output']}")
                else:
                    logger.error(f"[{name}] FAILED: {res.get('error')}")
            except Exception as exc:
                logger.error(f"[{name}] Generated an exception: {exc}")
                results.append({"status": "failed", "name": name, "error": str(exc)})

    duration = time.time() - start_time
    success_count = sum(1 for r in results if r["status"] == "success")

    logger.info("=" * 40)
    logger.info(f"Batch Processing Completed in {duration:.2f}s")
    logger.info(f"Total: {len(files)}, Success: {success_count}, Failed: {len(files) - success_count}")
    logger.info("=" * 40)


if __name__ == "__main__":
    main()
