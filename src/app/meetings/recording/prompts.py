"""Prompt for personalized participant summaries.

Times are rendered in the platform's home timezone (UTC+8) so the prompt is
identical for identical input regardless of where the service runs.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

PLATFORM_TIMEZONE = timezone(timedelta(hours=8))

NO_MINUTES = "暂无会议纪要"
NO_TODO = "暂无待办事项"
NO_TRANSCRIPT = "暂无录音转写"

PARTICIPANT_SUMMARY_SYSTEM_PROMPT = (
    "你是专业的会议总结助手，擅长为参会者提供个性化、实用的会议总结。"
)

PARTICIPANT_SUMMARY_TEMPLATE = """你是专业的会议总结助手，请为参会者提供个性化的会议总结。

会议信息：
- 会议主题：{subject}
- 会议时间：{start_time} - {end_time}
- 参会者：{username}

会议内容：
{ai_minutes}

待办事项：
{todo}

录音转写：
{transcript}

请为参会者「{username}」生成一份个性化的会议总结，包含：
1. 会议要点回顾
2. 与该参会者相关的重要讨论
3. 该参会者需要关注的待办事项
4. 后续行动建议
5. 其他重要内容

请用中文回答，保持简洁专业。"""


def format_meeting_time(epoch_seconds: int) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=PLATFORM_TIMEZONE).strftime(
        "%Y-%m-%d %H:%M:%S"
    )


def build_participant_summary_prompt(
    *,
    subject: str,
    start_time: int,
    end_time: int,
    username: str,
    ai_minutes: str,
    todo: str,
    transcript: str,
) -> str:
    return PARTICIPANT_SUMMARY_TEMPLATE.format(
        subject=subject,
        start_time=format_meeting_time(start_time),
        end_time=format_meeting_time(end_time),
        username=username,
        ai_minutes=ai_minutes or NO_MINUTES,
        todo=todo or NO_TODO,
        transcript=transcript or NO_TRANSCRIPT,
    )
