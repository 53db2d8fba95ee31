"""Static allow-list authorization."""


def is_authorized(
    user_id: int | str | None,
    allow_list: list[str],
    username: str | None = None,
) -> bool:
    """Check whether a user may talk to the bot.

    Entries in ``allow_list`` are user IDs or usernames (with or without a
    leading ``@``). An empty list denies everyone.
    """
    if user_id is None or not allow_list:
        return False

    allowed = {str(entry).strip().lstrip("@") for entry in allow_list}
    if str(user_id) in allowed:
        return True
    return bool(username) and username.lstrip("@") in allowed
