import argparse
import logging
import time
from pathlib import Path

from agsexport.config import ConfigError, load_config


def main():
    """Export every configured ArcGIS service to GeoJSON."""
    # 1) absolutely no logging.basicConfig here
    Path("logs").mkdir(exist_ok=True)

    p = argparse.ArgumentParser(description="Export ArcGIS feature services to GeoJSON")
    p.add_argument("--config", default=None, help="Path to config.yaml")
    p.add_argument("-s", "--services", default=None, help="Text file with url|name|throttle_ms lines")
    p.add_argument("-o", "--outdir", default=None, help="Output directory")
    p.add_argument("-S", "--shapefile", action="store_true", help="Also export a zipped shapefile")
    args = p.parse_args()

    try:
        cfg = load_config(
            Path(args.config) if args.config else None,
            services_file=Path(args.services) if args.services else None,
            output_dir=Path(args.outdir) if args.outdir else None,
        )
    except ConfigError as e:
        raise SystemExit(f"Config error: {e}") from e

    # 2) configure logging; all modules just use logging.getLogger(__name__)
    from agsexport.logging import log_phase_complete, log_phase_start, setup_from_config
    setup_from_config(cfg.logging)

    converter = None
    if args.shapefile or cfg.convert_to_shapefile:
        from agsexport.convert import Ogr2OgrShapefileConverter
        converter = Ogr2OgrShapefileConverter()
        if not converter.available():
            logging.warning("ogr2ogr not found on PATH; shapefile conversion will fail")

    from agsexport.monitoring import RunMonitor
    from agsexport.pipeline import export

    log_phase_start("export")
    monitor = RunMonitor()
    results = export(cfg, converter=converter, monitor=monitor)

    successful = sum(1 for r in results if r.success)
    log_phase_complete("Export", len(results), successful)
    monitor.log_summary()
    monitor.save_metrics(Path("logs") / f"export_metrics_{int(time.time())}.json")

    if successful != len(results):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
