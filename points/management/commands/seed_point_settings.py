from django.core.management.base import BaseCommand

from points.conf import ensure_defaults


class Command(BaseCommand):
    help = "建立缺少的點數系統設定 (不覆寫既有值)"

    def handle(self, *args, **options):
        created = ensure_defaults()
        self.stdout.write(self.style.SUCCESS(f"新增 {created} 筆點數設定"))
