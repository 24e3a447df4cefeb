from django.core import checks


@checks.register()
def contract_font_check(app_configs, **kwargs):
    from .contracts import contract_font_path

    if contract_font_path() is None:
        return [
            checks.Warning(
                "No CJK font found for contract images; signing will fail.",
                hint="Set CONTRACT_FONT_PATH to a Noto Sans CJK/TC font file.",
                id="commissions.W001",
            )
        ]
    return []
