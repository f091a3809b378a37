from __future__ import annotations

from .core import Topic


# 결제 SDK 웹훅에서 넘어오는 구매/복원/취소 이벤트
TOPIC_PURCHASE = Topic("study-assistant.purchase")
# 원장 변경(소비/지급) 알림
TOPIC_CREDIT = Topic("study-assistant.credit")
