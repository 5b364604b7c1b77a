import re
from dataclasses import dataclass

from chatglue.errors import ValidationFailed

# bytes <start>-<end>/<total>, end inclusive
CONTENT_RANGE_PATTERN = re.compile(r"^\s*bytes\s+(\d+)-(\d+)/(\d+)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class ContentRange:
    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def is_final(self) -> bool:
        return self.end + 1 == self.total


def parse_content_range(header: str) -> ContentRange:
    match = CONTENT_RANGE_PATTERN.match(header or "")
    if not match:
        raise ValidationFailed(["Content-Range must look like 'bytes start-end/total'"])

    start, end, total = (int(group) for group in match.groups())
    reasons = []
    if start > end:
        reasons.append("Content-Range start must not exceed end")
    if end >= total:
        reasons.append("Content-Range end must be smaller than total")
    if reasons:
        raise ValidationFailed(reasons)
    return ContentRange(start=start, end=end, total=total)
