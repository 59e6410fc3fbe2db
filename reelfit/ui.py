def human_size(nbytes: int | None, lang: str = "ru") -> str:
    if not nbytes or nbytes < 0:
        return "?"
    if lang == "ru":
        units = ["Б", "КБ", "МБ", "ГБ", "ТБ"]
    else:
        units = ["B", "KB", "MB", "GB", "TB"]
    size = float(nbytes)
    for u in units:
        if size < 1024 or u == units[-1]:
            val = f"{size:.1f}".rstrip("0").rstrip(".")
            return f"{val} {u}"
        size /= 1024
    return f"{nbytes} {units[0]}"
