"""Exploration schedules."""


def linear_epsilon(
    episode: int,
    start: float,
    end: float,
    total_episodes: int,
) -> float:
    """Linearly decayed exploration rate.

    Equals ``start`` at episode 0 and ``end`` at ``total_episodes``;
    episodes outside that range are clamped to it.

    Args:
        episode: Completed episode count
        start: Initial epsilon
        end: Final epsilon
        total_episodes: Episodes over which to decay

    Returns:
        Epsilon for this episode
    """
    if total_episodes <= 0:
        raise ValueError("total_episodes must be positive")

    episode = min(max(episode, 0), total_episodes)
    if episode == total_episodes:
        return end
    return end + (start - end) * (1.0 - episode / total_episodes)
