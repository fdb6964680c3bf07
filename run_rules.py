# run_rules.py
import argparse
import json
import sys

from drainage.classifier import DefectClassifier
from drainage.composer import RecommendationComposer
from drainage.config import get_config
from drainage.constants import RUN_SUCCESS, SECTORS
from drainage.errors import DrainageError
from drainage.io_excel import dashboard_frame, load_sections_table, sections_from_frame, write_result
from drainage.log_setup import configure_logging
from drainage.progress_tracker import create_progress_tracker
from drainage.report import generate_sector_report, results_to_dataframe
from drainage.rules_runner import RulesRunner
from drainage.section_processor import SectionProcessor
from drainage.standards import AdoptionStandard, load_standards
from drainage.store import RulesStore


def _load_cost_bands(path):
    if not path:
        return None
    with open(path, encoding="utf-8") as f:
        return {int(k): v for k, v in json.load(f).items()}


def _build(cfg, with_store=True):
    store = RulesStore(str(cfg.store.db_path)) if with_store else None
    provider = load_standards(cfg.standards_dir, adoption_rows=store.adoption_standards() if store else None)
    composer = RecommendationComposer(
        provider,
        patch_unit_cost=cfg.patching.unit_cost,
        proximity_m=cfg.patching.proximity_m,
    )
    return store, DefectClassifier(provider, composer)


def cmd_classify(args, cfg):
    _, classifier = _build(cfg, with_store=False)
    secstat = None
    if args.secstat_structural is not None or args.secstat_service is not None:
        secstat = {"structural": args.secstat_structural, "service": args.secstat_service}
    section = {"item_no": args.item_no, "raw_observations": args.text, "secstat_grades": secstat}
    processed = SectionProcessor(classifier).process_section(section, args.sector, _load_cost_bands(args.cost_bands))

    if args.json:
        print(json.dumps(
            [{"item": p.item_label, **p.result.to_dict()} for p in processed.records],
            indent=2, default=str, ensure_ascii=False,
        ))
        return 0
    for p in processed.records:
        r = p.result
        print(f"Item {p.item_label}: {r.defect_code} | grade {r.severity_grade} ({r.defect_type}) | "
              f"adoptable {r.adoptable} | {r.estimated_cost}")
        print(f"  {r.defect_description}")
        print(f"  → {r.recommendations}")
        if r.adoption_notes:
            print(f"  Notes: {r.adoption_notes}")
    print(f"Section grade: {processed.section_grade}")
    return 0


def cmd_ingest(args, cfg):
    store = RulesStore(str(cfg.store.db_path))
    sections = sections_from_frame(load_sections_table(args.file))
    ids = store.add_sections(args.upload_id, sections)
    print(f"Ingested {len(ids)} sections into upload {args.upload_id}")
    return 0


def cmd_run(args, cfg):
    store, classifier = _build(cfg)
    runner = RulesRunner(store, classifier, lock_dir=str(cfg.store.lock_dir), lock_timeout=cfg.store.lock_timeout)
    tracker = create_progress_tracker(description=f"Upload {args.upload_id}", mode=args.progress)
    result = runner.run_classification_for_upload(
        args.upload_id, args.sector, _load_cost_bands(args.cost_bands), progress=tracker
    )
    print(f"Run {result.run_id}: {result.status} | sections {result.sections_processed} | "
          f"observations {result.observations_created}")
    if result.status != RUN_SUCCESS:
        print(result.error_text, file=sys.stderr)
        return 1
    return 0


def cmd_dashboard(args, cfg):
    store, classifier = _build(cfg)
    runner = RulesRunner(store, classifier, lock_dir=str(cfg.store.lock_dir), lock_timeout=cfg.store.lock_timeout)
    data = runner.get_composed_section_data(args.upload_id, args.sector, _load_cost_bands(args.cost_bands))
    df = dashboard_frame(data["sections"])
    if args.out:
        print(f"Written: {write_result(df, args.out)}")
    else:
        print(df.to_string(index=False))
    run = data["rules_run"]
    print(f"Rules run {run['id']} ({run['ruleset_version']}) derived at {run['finished_at']}")
    return 0


def cmd_standards(args, cfg):
    store = RulesStore(str(cfg.store.db_path))
    if args.set_threshold is not None:
        store.upsert_sector_standard(AdoptionStandard(
            sector=args.sector,
            belly_threshold=args.set_threshold,
            standard_name=args.standard_name or f"{args.sector.title()} standard",
            authority=args.authority or "",
        ))
    provider = load_standards(cfg.standards_dir, adoption_rows=store.adoption_standards())
    std = provider.adoption_standard(args.sector)
    print(f"{args.sector}: belly threshold {std.belly_threshold}% | {std.standard_name} | {std.authority}")
    catalogue = provider.sector_standards(args.sector)
    if catalogue:
        for item in catalogue["standards"]:
            print(f"  - {item['name']}: {item['description']}")
    return 0


def cmd_report(args, cfg):
    _, classifier = _build(cfg, with_store=False)
    processor = SectionProcessor(classifier)
    cost_bands = _load_cost_bands(args.cost_bands)
    results, labels = [], []
    for section in sections_from_frame(load_sections_table(args.file)):
        for p in processor.process_section(section, args.sector, cost_bands).records:
            results.append(p.result)
            labels.append(p.item_label)
    print(generate_sector_report(results, args.sector, classifier.provider, labels))
    if args.out:
        print(f"Written: {write_result(results_to_dataframe(results, labels), args.out)}")
    return 0


def main(argv=None):
    cfg = get_config()
    ap = argparse.ArgumentParser(description="MSCC5 drainage defect classification and rules runs")
    ap.add_argument("--log-level", default=cfg.log_level)
    sub = ap.add_subparsers(dest="command", required=True)

    def sector_arg(p):
        p.add_argument("--sector", default=cfg.default_sector, choices=SECTORS)

    p = sub.add_parser("classify", help="Classify observation text for one section")
    p.add_argument("text", nargs="+", help="Raw observation(s)")
    p.add_argument("--item-no", default="1")
    p.add_argument("--secstat-structural", type=int)
    p.add_argument("--secstat-service", type=int)
    p.add_argument("--cost-bands", help="JSON file {grade: band}")
    p.add_argument("--json", action="store_true")
    sector_arg(p)
    p.set_defaults(func=cmd_classify)

    p = sub.add_parser("ingest", help="Load a section export into the store")
    p.add_argument("--file", required=True, help=".xlsx or .csv section export")
    p.add_argument("--upload-id", type=int, required=True)
    p.set_defaults(func=cmd_ingest)

    p = sub.add_parser("run", help="Start a new rules run for an upload")
    p.add_argument("--upload-id", type=int, required=True)
    p.add_argument("--cost-bands")
    p.add_argument("--progress", default="console", choices=["console", "file", "silent"])
    sector_arg(p)
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("dashboard", help="Dashboard rows from the latest successful run")
    p.add_argument("--upload-id", type=int, required=True)
    p.add_argument("--cost-bands")
    p.add_argument("--out", help="Write .xlsx/.csv instead of printing")
    sector_arg(p)
    p.set_defaults(func=cmd_dashboard)

    p = sub.add_parser("standards", help="Show or set a sector's adoption standard")
    p.add_argument("--set-threshold", type=int)
    p.add_argument("--standard-name")
    p.add_argument("--authority")
    sector_arg(p)
    p.set_defaults(func=cmd_standards)

    p = sub.add_parser("report", help="Sector analysis report for a section export")
    p.add_argument("--file", required=True)
    p.add_argument("--cost-bands")
    p.add_argument("--out")
    sector_arg(p)
    p.set_defaults(func=cmd_report)

    args = ap.parse_args(argv)
    configure_logging(args.log_level, cfg.json_logs)
    try:
        return args.func(args, cfg)
    except DrainageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
