from django.core.management.base import BaseCommand

from points.services import expire_points


class Command(BaseCommand):
    help = "將已過期的點數批次轉為過期 (建議每日排程執行)"

    def handle(self, *args, **options):
        total = expire_points()
        self.stdout.write(self.style.SUCCESS(f"已過期點數: {total}"))
