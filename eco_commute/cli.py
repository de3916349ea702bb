"""Command-line interface for eco_commute.

Run:
    python -m eco_commute replay --csv track.csv --save
    python -m eco_commute stats
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from eco_commute.csv_io import load_fixes
from eco_commute.impact import build_candidate
from eco_commute.ledger import LedgerWriteError, TripLedger
from eco_commute.models import DEFAULT_TZ, TRAVEL_MODES
from eco_commute.speed import format_elapsed, format_speed
from eco_commute.store import FileStore
from eco_commute.timeutils import format_trip_date
from eco_commute.tracker import ReplayLocationSource, TrackerParams, TripRecorder

DEFAULT_STORE_DIR = ".eco_commute"


def _ledger(args: argparse.Namespace) -> TripLedger:
    return TripLedger(FileStore(args.store))


def _cmd_replay(args: argparse.Namespace) -> int:
    fixes, summary = load_fixes(args.csv)
    if not fixes:
        print(f"没有可用的定位点：{args.csv}", file=sys.stderr)
        return 1

    params = TrackerParams(
        noise_threshold_km=args.threshold_km,
        min_inference_seconds=args.min_inference_seconds,
    )
    recorder = TripRecorder(ReplayLocationSource(fixes), params)
    recorder.start()
    if recorder.last_error is not None:
        print(recorder.last_error.message, file=sys.stderr)
    metrics = recorder.stop()

    print("### 行数")
    print(f"total_rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    print(f"accepted={metrics.accepted_fixes}, rejected(漂移)={metrics.rejected_fixes}")
    print()
    print("### 行程")
    print(
        f"distance={metrics.distance_km:.2f} km, duration={format_elapsed(metrics.duration_seconds)}, "
        f"speed={format_speed(metrics.avg_speed_kmh)}, inferred_mode={metrics.inferred_mode or '-'}"
    )

    candidate = build_candidate(metrics, manual_mode=args.mode)
    print(
        f"mode={candidate.mode}, carbon_saved={candidate.carbon_saved_kg:.2f} kg, points={candidate.points}"
    )

    if args.json:
        print(json.dumps({"metrics": asdict(metrics), "candidate": asdict(candidate)}, ensure_ascii=False, indent=2))

    if args.save:
        try:
            trip = _ledger(args).save_trip(candidate)
        except LedgerWriteError as exc:
            print(f"保存失败：{exc}", file=sys.stderr)
            return 1
        print(f"已保存：{trip.id}")
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    ledger = _ledger(args)
    stats = ledger.get_aggregate_stats()
    if args.json:
        print(json.dumps(stats.to_dict(), ensure_ascii=False, indent=2))
        return 0
    print(f"trips={stats.trip_count}")
    print(f"distance={stats.total_distance_km:.2f} km")
    print(f"carbon_saved={stats.total_carbon_kg:.2f} kg")
    print(f"points={stats.total_points}")
    print(f"goal({args.goal_km:g} km)={ledger.goal_progress(args.goal_km):.1f}%")
    print(f"last_updated={stats.last_updated or '-'}")
    return 0


def _cmd_trips(args: argparse.Namespace) -> int:
    trips = _ledger(args).get_trips(args.limit)
    if not trips:
        print("暂无行程记录")
        return 0
    for t in trips:
        print(
            f"{format_trip_date(t.date, args.tz):>10}  {t.mode:<8} {t.distance_km:6.2f} km  "
            f"{format_elapsed(t.duration_seconds)}  {t.carbon_saved_kg:5.2f} kg  {t.points:4d} pts  {t.id}"
        )
    return 0


def _cmd_modes(args: argparse.Namespace) -> int:
    counts = _ledger(args).trips_grouped_by_mode()
    for mode, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        print(f"{mode}={n}")
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    if _ledger(args).verify_integrity():
        print("汇总数据一致")
    else:
        print("发现不一致，已按行程列表重新计算汇总")
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    text = _ledger(args).export_all()
    if args.out is None:
        print(text)
        return 0
    p = Path(args.out)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    print(f"已导出：{args.out}")
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    try:
        text = Path(args.file).read_text(encoding="utf-8")
    except OSError as exc:
        print(f"无法读取文件：{exc}", file=sys.stderr)
        return 1
    if not _ledger(args).import_all(text):
        print("导入失败：备份文件格式不正确，数据未改动", file=sys.stderr)
        return 1
    print(f"已导入：{args.file}")
    return 0


def _cmd_clear(args: argparse.Namespace) -> int:
    if not args.yes:
        print("这会删除全部行程与汇总数据；确认请加 --yes", file=sys.stderr)
        return 2
    if not _ledger(args).clear_all():
        print("清空失败", file=sys.stderr)
        return 1
    print("已清空")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="eco_commute")
    p.add_argument("--store", type=str, default=DEFAULT_STORE_DIR, help="账本存储目录")
    p.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别（DEBUG 可看到被丢弃的漂移点）",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    p_rep = sub.add_parser("replay", help="回放轨迹 CSV，计算距离/速度/出行方式/减排")
    p_rep.add_argument("--csv", type=str, default="track.csv", help="输入CSV路径")
    p_rep.add_argument("--mode", type=str, default=None, choices=TRAVEL_MODES, help="手动指定出行方式（覆盖推断结果）")
    p_rep.add_argument("--threshold-km", type=float, default=0.2, help="漂移判定阈值（公里），超过即丢弃")
    p_rep.add_argument("--min-inference-seconds", type=float, default=10.0, help="行程至少多长才推断出行方式")
    p_rep.add_argument("--save", action="store_true", help="保存到账本")
    p_rep.add_argument("--json", action="store_true", help="额外输出JSON（便于后处理）")
    p_rep.set_defaults(func=_cmd_replay)

    p_st = sub.add_parser("stats", help="查看累计统计")
    p_st.add_argument("--goal-km", type=float, default=50.0, help="月度目标距离（公里）")
    p_st.add_argument("--json", action="store_true", help="输出JSON")
    p_st.set_defaults(func=_cmd_stats)

    p_tr = sub.add_parser("trips", help="列出最近的行程（最新在前）")
    p_tr.add_argument("--limit", type=int, default=5, help="最多显示条数")
    p_tr.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA）")
    p_tr.set_defaults(func=_cmd_trips)

    p_mo = sub.add_parser("modes", help="按出行方式统计行程数")
    p_mo.set_defaults(func=_cmd_modes)

    p_ve = sub.add_parser("verify", help="校验汇总与行程列表是否一致，不一致则修复")
    p_ve.set_defaults(func=_cmd_verify)

    p_ex = sub.add_parser("export", help="导出全部数据为JSON备份")
    p_ex.add_argument("--out", type=str, default=None, help="输出文件（默认打印到标准输出）")
    p_ex.set_defaults(func=_cmd_export)

    p_im = sub.add_parser("import", help="从JSON备份恢复（会覆盖现有数据）")
    p_im.add_argument("file", type=str, help="备份文件路径")
    p_im.set_defaults(func=_cmd_import)

    p_cl = sub.add_parser("clear", help="清空全部数据")
    p_cl.add_argument("--yes", action="store_true", help="确认清空")
    p_cl.set_defaults(func=_cmd_clear)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
