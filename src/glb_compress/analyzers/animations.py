"""Animation statistics."""

from __future__ import annotations

from dataclasses import dataclass

from glb_compress.scene.model import Document


@dataclass
class AnimationStats:
    clips: int = 0
    channels: int = 0
    keyframes: int = 0

    def summary(self) -> str:
        return (
            f"Animations: {self.clips} clips, {self.channels} channels, "
            f"{self.keyframes:,} keyframes"
        )


def analyze_animations(doc: Document) -> AnimationStats | None:
    """Count clips, channels and keyframes; None when there are no animations."""
    animations = doc.list_animations()
    if not animations:
        return None

    stats = AnimationStats(clips=len(animations))
    for animation in animations:
        channels = animation.list_channels()
        stats.channels += len(channels)
        for channel in channels:
            sampler = channel.get_sampler()
            if sampler is not None:
                stats.keyframes += sampler.get_input().get_count()
    return stats
