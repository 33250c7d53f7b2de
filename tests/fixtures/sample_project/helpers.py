def clamp(value, low, high):
    return max(low, min(value, high))


def unused(values):
    return sorted(values)
