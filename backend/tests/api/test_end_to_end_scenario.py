def test_appointment_to_paid_invoice(
    api_client, headers_for, patient, doctor, frontdesk_user, admin_user
):
    as_patient = headers_for(patient.user)
    as_desk = headers_for(frontdesk_user)
    as_doctor = headers_for(doctor.user)
    as_admin = headers_for(admin_user)

    res = api_client.post(
        "/appointments", json={"doctor_id": doctor.id, "reason": "Toothache"}, headers=as_patient
    )
    assert res.status_code == 201, res.text
    appt = res.json()
    assert appt["status"] == "REQUESTED"
    assert appt["patient"]["id"] == patient.id

    res = api_client.post(
        f"/appointments/{appt['id']}/schedule",
        json={"scheduled_time": "2025-01-10T09:00:00Z"},
        headers=as_desk,
    )
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "SCHEDULED"

    res = api_client.put(
        f"/appointments/{appt['id']}/status", json={"status": "CONFIRMED"}, headers=as_desk
    )
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "CONFIRMED"

    res = api_client.post(
        "/visits",
        json={
            "patient_id": patient.id,
            "appointment_id": appt["id"],
            "visit_date": "2025-01-10T09:05:00Z",
        },
        headers=as_doctor,
    )
    assert res.status_code == 201, res.text
    visit = res.json()
    assert visit["doctor_id"] == doctor.id

    for name, cost in (("Root canal", 3000), ("X-ray", 1500)):
        res = api_client.post(
            f"/visits/{visit['id']}/procedures",
            json={"name": name, "cost_minor": cost},
            headers=as_doctor,
        )
        assert res.status_code == 201, res.text

    res = api_client.post(f"/visits/{visit['id']}/complete", headers=as_doctor)
    assert res.status_code == 200, res.text
    completed = res.json()
    assert completed["status"] == "COMPLETED"
    assert completed["total_cost_minor"] == 4500
    assert len(completed["procedures"]) == 2

    res = api_client.put(
        f"/appointments/{appt['id']}/status", json={"status": "COMPLETED"}, headers=as_doctor
    )
    assert res.status_code == 200, res.text

    res = api_client.post(
        "/invoices",
        json={"patient_id": patient.id, "visit_id": visit["id"], "total_minor": 4500},
        headers=as_admin,
    )
    assert res.status_code == 201, res.text
    invoice = res.json()
    assert invoice["invoice_number"] == "INV-000001"
    assert invoice["status"] == "DRAFT"

    res = api_client.post(f"/invoices/{invoice['id']}/issue", headers=as_admin)
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "ISSUED"
    assert res.json()["due_date"] is not None

    res = api_client.post(
        f"/invoices/{invoice['id']}/payments",
        json={"amount_minor": 2000, "method": "MOBILE_MONEY"},
        headers=as_patient,
    )
    assert res.status_code == 201, res.text
    res = api_client.get(f"/invoices/{invoice['id']}", headers=as_patient)
    assert res.json()["status"] == "PARTIALLY_PAID"
    assert res.json()["balance_minor"] == 2500

    res = api_client.post(
        f"/invoices/{invoice['id']}/payments",
        json={"amount_minor": 2500, "method": "CASH"},
        headers=as_patient,
    )
    assert res.status_code == 201, res.text
    res = api_client.get(f"/invoices/{invoice['id']}", headers=as_patient)
    body = res.json()
    assert body["status"] == "PAID"
    assert body["balance_minor"] == 0
    assert body["paid_at"] is not None
    assert len(body["payments"]) == 2

    res = api_client.post(
        f"/invoices/{invoice['id']}/payments",
        json={"amount_minor": 1, "method": "CASH"},
        headers=as_patient,
    )
    assert res.status_code == 400
    assert res.json()["code"] == "invoice_not_modifiable"

    res = api_client.get(f"/audit/invoices/{invoice['id']}", headers=as_admin)
    assert res.status_code == 200, res.text
    actions = [entry["action"] for entry in res.json()]
    assert "invoice.paid" in actions
