import re

from tracker.couriers.base import NumericCourierProvider


class SpeedexProvider(NumericCourierProvider):
    # No placeholder check: Speedex only gets the phone/order collision guards.
    id = "speedex"
    label = "SPEEDEX"
    format_label = "Speedex"
    shape = re.compile(r"\d{10,14}")
