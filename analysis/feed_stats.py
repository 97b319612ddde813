"""
Feed statistics.

Flattens a post list into a pandas DataFrame and reduces it to the
counts shown by the dashboard's --stats view.
"""

import logging
from typing import Dict, List

import pandas as pd

from models.post import Post

logger = logging.getLogger(__name__)

COLUMNS = [
    "id", "created_at", "author_type", "author", "type",
    "audience_kind", "audience", "likes", "comments", "replies", "attachments",
]


def feed_frame(posts: List[Post]) -> pd.DataFrame:
    """
    One row per post.

    Returns:
        DataFrame with COLUMNS; created_at is a UTC datetime column when
        there are rows
    """
    rows = []
    for post in posts:
        rows.append({
            "id": post.id,
            "created_at": post.created_at,
            "author_type": post.author_type,
            "author": post.author,
            "type": post.type,
            "audience_kind": post.audience.kind,
            "audience": post.audience.key,
            "likes": post.likes,
            "comments": len(post.comments),
            "replies": sum(len(c.replies) for c in post.comments),
            "attachments": len(post.attachment_ids()),
        })

    df = pd.DataFrame(rows, columns=COLUMNS)
    if not df.empty:
        df["created_at"] = pd.to_datetime(df["created_at"], unit="ms", utc=True)
    return df


def summarize(posts: List[Post], top_n: int = 3) -> Dict:
    """
    Totals for a post list.

    Args:
        posts: Any post list (merged collections or a built feed)
        top_n: How many most-liked post ids to report

    Returns:
        Dict with total, by_type, by_author_type, by_audience, comments,
        replies, top_liked and date_range
    """
    df = feed_frame(posts)
    if df.empty:
        return {
            "total": 0,
            "by_type": {},
            "by_author_type": {},
            "by_audience": {},
            "comments": 0,
            "replies": 0,
            "top_liked": [],
            "date_range": {"min": None, "max": None},
        }

    top = df[df["likes"] > 0].sort_values("likes", ascending=False, kind="stable")

    summary = {
        "total": int(len(df)),
        "by_type": {k: int(v) for k, v in df["type"].value_counts().items()},
        "by_author_type": {k: int(v) for k, v in df["author_type"].value_counts().items()},
        "by_audience": {k: int(v) for k, v in df["audience_kind"].value_counts().items()},
        "comments": int(df["comments"].sum()),
        "replies": int(df["replies"].sum()),
        "top_liked": top["id"].head(top_n).tolist(),
        "date_range": {
            "min": df["created_at"].min().isoformat(),
            "max": df["created_at"].max().isoformat(),
        },
    }
    logger.debug(f"Summarized {summary['total']} posts")
    return summary
