from __future__ import annotations

import tempfile
from pathlib import Path

import streamlit as st

from eco_commute.csv_io import load_fixes
from eco_commute.impact import build_candidate
from eco_commute.ledger import LedgerWriteError, TripLedger
from eco_commute.models import DEFAULT_TZ, TRAVEL_MODES
from eco_commute.speed import format_elapsed, format_speed
from eco_commute.store import FileStore
from eco_commute.timeutils import format_trip_date
from eco_commute.tracker import ReplayLocationSource, TrackerParams, TripRecorder


def _replay_uploaded(data: bytes, params: TrackerParams):
    # load_fixes 读取的是文件路径，先落到临时文件
    with tempfile.TemporaryDirectory() as tmp:
        p = Path(tmp) / "track.csv"
        p.write_bytes(data)
        fixes, summary = load_fixes(p)
    recorder = TripRecorder(ReplayLocationSource(fixes), params)
    recorder.start()
    error = recorder.last_error
    return recorder.stop(), summary, error


def main() -> None:
    st.set_page_config(page_title="Eco Commute：行程与减排统计", layout="wide")
    st.title("Eco Commute：行程与减排统计")

    with st.sidebar:
        st.subheader("数据")
        store_dir = st.text_input("账本存储目录", value=".eco_commute")
        tz_name = st.text_input("时区（IANA）", value=DEFAULT_TZ)
        goal_km = st.number_input("月度目标（公里）", value=50.0, step=5.0)

        with st.expander("高级参数（通常不用改）", expanded=False):
            threshold_km = st.number_input("漂移阈值 noise_threshold_km", value=0.2, step=0.05)
            min_inference_seconds = st.number_input("推断最短时长（秒）", value=10.0, step=1.0)

    ledger = TripLedger(FileStore(store_dir))

    st.subheader("回放轨迹并保存")
    uploaded = st.file_uploader("轨迹 CSV（geoTime, latitude, longitude）", type=["csv"])
    if uploaded is not None:
        try:
            metrics, summary, error = _replay_uploaded(
                uploaded.getvalue(),
                TrackerParams(noise_threshold_km=float(threshold_km), min_inference_seconds=float(min_inference_seconds)),
            )
        except KeyError as exc:
            st.error(str(exc))
            return
        if error is not None:
            st.warning(error.message)
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("距离", f"{metrics.distance_km:.2f} km")
        c2.metric("时长", format_elapsed(metrics.duration_seconds))
        c3.metric("平均速度", format_speed(metrics.avg_speed_kmh))
        c4.metric("推断方式", metrics.inferred_mode or "-")
        st.caption(
            f"rows={summary.rows_total}, parsed={summary.rows_parsed}, "
            f"accepted={metrics.accepted_fixes}, rejected={metrics.rejected_fixes}"
        )
        options = ["（使用推断结果）", *TRAVEL_MODES]
        choice = st.selectbox("出行方式", options)
        manual_mode = None if choice == options[0] else choice
        candidate = build_candidate(metrics, manual_mode=manual_mode)
        st.write(f"减排 {candidate.carbon_saved_kg:.2f} kg CO₂，获得 {candidate.points} 分")
        if st.button("保存行程", type="primary"):
            try:
                trip = ledger.save_trip(candidate)
            except LedgerWriteError as exc:
                st.error(f"保存失败：{exc}")
            else:
                st.success(f"已保存：{trip.id}")

    stats = ledger.get_aggregate_stats()
    st.subheader("汇总")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("行程数", str(stats.trip_count))
    c2.metric("总距离", f"{stats.total_distance_km:.2f} km")
    c3.metric("累计减排", f"{stats.total_carbon_kg:.2f} kg")
    c4.metric("积分", str(stats.total_points))
    progress = ledger.goal_progress(float(goal_km))
    st.progress(progress / 100.0, text=f"目标进度 {progress:.1f}%")

    st.subheader("按出行方式")
    by_mode = ledger.trips_grouped_by_mode()
    if by_mode:
        st.bar_chart(by_mode)
    else:
        st.caption("暂无行程")

    st.subheader("最近行程（最新在前）")
    rows = [
        {
            "date": format_trip_date(t.date, tz_name),
            "mode": t.mode,
            "distance_km": t.distance_km,
            "duration": format_elapsed(t.duration_seconds),
            "carbon_saved_kg": t.carbon_saved_kg,
            "points": t.points,
            "id": t.id,
        }
        for t in ledger.get_trips(20)
    ]
    st.dataframe(rows, use_container_width=True, height=360)

    st.subheader("维护")
    c1, c2 = st.columns(2)
    with c1:
        if st.button("校验汇总"):
            if ledger.verify_integrity():
                st.success("汇总数据一致")
            else:
                st.warning("发现不一致，已按行程列表重新计算")
        st.download_button("导出备份", data=ledger.export_all(), file_name="eco_commute_backup.json")
    with c2:
        backup = st.file_uploader("导入备份（覆盖现有数据）", type=["json"])
        if backup is not None and st.button("导入"):
            if ledger.import_all(backup.getvalue()):
                st.success("已导入")
            else:
                st.error("导入失败：备份文件格式不正确，数据未改动")


if __name__ == "__main__":
    main()
