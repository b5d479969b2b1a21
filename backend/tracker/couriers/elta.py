import re

from tracker.couriers.base import NumericCourierProvider


class EltaProvider(NumericCourierProvider):
    id = "elta"
    label = "ELTA Hellenic Post"
    format_label = "ELTA"
    shape = re.compile(r"\d{9,13}")
    blocked = re.compile(r"0{9,}|1{9,}|123456789")
    block_in_shape = True
