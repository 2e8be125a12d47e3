from storefront.models import ProductVariant, VariantAttributeValue
from storefront.services import cart_service, inventory_service
from storefront.services.cart_service import OwnerHint


def test_inventory_adjust_and_show(app, db_session, catalog):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["inventory", "adjust", "--variant-id", str(catalog.red_m), "--delta", "5", "--note", "Restock"])
    assert result.exit_code == 0, result.output
    assert "stock is now 15" in result.output
    assert inventory_service.get_stock(catalog.red_m) == 15

    result = runner.invoke(args=["inventory", "show", "--variant-id", str(catalog.red_m)])
    assert result.exit_code == 0, result.output
    assert "Classic Tee Red - M" in result.output
    assert "ADJUST" in result.output
    assert "Restock" in result.output


def test_inventory_adjust_below_zero_fails(app, db_session, catalog):
    result = app.test_cli_runner().invoke(
        args=["inventory", "adjust", "--variant-id", str(catalog.blue_s), "--delta", "-6"]
    )

    assert result.exit_code != 0
    assert "Insufficient stock" in result.output
    assert inventory_service.get_stock(catalog.blue_s) == 5


def test_audit_duplicates_dry_run_then_apply(app, db_session, catalog):
    legacy = ProductVariant(product_id=catalog.product_id, stock=0, signature="legacy")
    legacy.attribute_links.append(VariantAttributeValue(attribute_value_id=catalog.values["Color:Red"]))
    legacy.attribute_links.append(VariantAttributeValue(attribute_value_id=catalog.values["Size:M"]))
    db_session.add(legacy)
    db_session.commit()
    legacy_id = legacy.id

    runner = app.test_cli_runner()
    result = runner.invoke(args=["catalog", "audit-duplicates"])
    assert result.exit_code == 0, result.output
    assert f"removable=[{legacy_id}]" in result.output
    assert "Dry run" in result.output
    assert db_session.get(ProductVariant, legacy_id).is_deleted is False

    result = runner.invoke(args=["catalog", "audit-duplicates", "--apply"])
    assert "Soft-deleted 1" in result.output

    result = runner.invoke(args=["catalog", "audit-duplicates", "--product-id", str(catalog.product_id)])
    assert "No duplicate variants found" in result.output


def test_purge_expired_carts_command(app, db_session, catalog):
    cart_service.add_item(OwnerHint(customer_id=7), catalog.red_m, 1)

    result = app.test_cli_runner().invoke(args=["carts", "purge-expired"])

    assert result.exit_code == 0, result.output
    assert "Deleted 0 expired carts." in result.output
