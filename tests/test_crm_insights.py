import unittest
from datetime import datetime, timedelta
from unittest import mock

from db_helpers import make_session_factory
from services import crm_insights
from services.ai_service import AIResponseError
from shared.db import Activity, Business, Contact, Deal

NOW = datetime(2024, 5, 1, 12, 0, 0)


class StageFlowTests(unittest.TestCase):
    def test_next_stage(self):
        self.assertEqual(crm_insights.next_stage("Prospecting"), "Qualification")
        self.assertEqual(crm_insights.next_stage("Negotiation"), "Closed Won")
        self.assertEqual(crm_insights.next_stage("Follow-up"), "Proposal")
        self.assertEqual(crm_insights.next_stage("Something else"), "Qualification")
        self.assertEqual(crm_insights.next_stage(None), "Qualification")


class FallbackTests(unittest.TestCase):
    def test_lead_scores_floor_and_cap(self):
        contacts = [{"id": f"c{i}", "first_name": f"N{i}"} for i in range(10)]
        scores = crm_insights.fallback_lead_scores(contacts)
        self.assertEqual([s["score"] for s in scores[:3]], [85, 75, 65])
        self.assertEqual(scores[9]["score"], 0)
        self.assertEqual(scores[9]["confidence"], 100)
        self.assertEqual(scores[0]["contactId"], "c0")

    def test_lead_scores_demo_when_empty(self):
        scores = crm_insights.fallback_lead_scores([])
        self.assertEqual([s["contactId"] for s in scores], ["demo-contact-1", "demo-contact-2"])

    def test_pipeline_uses_first_three_deals(self):
        deals = [
            {"id": "d1", "title": "One", "stage": "Proposal"},
            {"id": "d2", "title": "Two", "stage": None},
            {"id": "d3", "title": "Three", "stage": "Follow-up"},
            {"id": "d4", "title": "Four", "stage": "Prospecting"},
        ]
        recs = crm_insights.fallback_pipeline_recommendations(deals)
        self.assertEqual([r["dealId"] for r in recs], ["d1", "d2", "d3"])
        self.assertEqual([r["suggestedStage"] for r in recs], ["Negotiation", "Proposal", "Proposal"])
        self.assertEqual(recs[1]["currentStage"], "Qualification")
        self.assertEqual([r["confidence"] for r in recs], [78, 83, 88])
        self.assertEqual([r["urgency"] for r in recs], ["high", "medium", "low"])

    def test_activity_fallback_with_contact_and_deal(self):
        recs = crm_insights.fallback_activity_recommendations(
            {"contact": {"first_name": "Grace"}, "deal": {"title": "Big Deal"}}, NOW
        )
        self.assertEqual(recs[0]["priority"], "high")
        self.assertEqual(recs[0]["title"], "Follow up with Grace")
        self.assertEqual(recs[0]["suggestedDate"], (NOW + timedelta(days=2)).isoformat() + "Z")
        self.assertEqual(recs[1]["title"], "Prepare custom proposal for Big Deal")

    def test_activity_fallback_without_context(self):
        recs = crm_insights.fallback_activity_recommendations({}, NOW)
        self.assertEqual(recs[0]["priority"], "medium")
        self.assertEqual(recs[1]["title"], "Prepare custom proposal")

    def test_dashboard_demo_when_no_rows(self):
        insights = crm_insights.fallback_dashboard_insights([], [], [], NOW)
        self.assertEqual([i["type"] for i in insights], ["trend", "prediction", "recommendation", "alert"])

    def test_dashboard_derived_insights(self):
        stale = (NOW - timedelta(days=30)).isoformat()
        deals = [
            {"id": "d1", "stage": "Proposal", "value": 1000, "updated_at": stale},
            {"id": "d2", "stage": "Closed Won", "value": 5000, "updated_at": stale},
        ]
        contacts = [{"id": "c1"}, {"id": "c2"}]
        activities = [
            {"contact_id": "c1", "completed": False, "due_date": (NOW - timedelta(days=1)).isoformat()},
        ]
        insights = crm_insights.fallback_dashboard_insights(contacts, deals, activities, NOW)
        titles = [i["title"] for i in insights]
        self.assertEqual(
            titles,
            ["Open Pipeline Value", "Deal Risk Alert", "Follow-up Opportunity", "Overdue Activities"],
        )
        self.assertEqual(insights[0]["data"], {"openDeals": 1, "value": 1000})
        self.assertEqual(insights[1]["data"]["stalledDeals"], 1)
        self.assertEqual(insights[2]["data"]["inactiveContacts"], 1)
        self.assertEqual([i["id"] for i in insights], ["insight-1", "insight-2", "insight-3", "insight-4"])


class BuilderTests(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.addCleanup(self.db.close)
        business = Business(bin="BIN100", business_name="Acme Ltd")
        self.db.add(business)
        self.db.flush()
        contact = Contact(business_id=business.id, first_name="Grace", last_name="Hopper", company="Navy")
        self.db.add(contact)
        self.db.flush()
        deal = Deal(business_id=business.id, contact_id=contact.id, title="Big Deal", value=2500, stage="Proposal")
        self.db.add(deal)
        self.db.flush()
        self.db.add(Activity(business_id=business.id, contact_id=contact.id, deal_id=deal.id, type="call"))
        self.db.commit()
        self.business_id, self.contact_id, self.deal_id = business.id, contact.id, deal.id

        patcher = mock.patch("services.crm_insights.ai_enabled", return_value=False)
        self.ai_enabled = patcher.start()
        self.addCleanup(patcher.stop)

    def test_contact_analysis_without_ai_uses_rows(self):
        result = crm_insights.build_contact_analysis(self.db, self.business_id, NOW)
        self.assertEqual(result["leadScores"][0]["contactId"], self.contact_id)
        self.assertEqual(result["analysisDate"], NOW.isoformat() + "Z")

    def test_pipeline_returns_ai_payload_verbatim(self):
        self.ai_enabled.return_value = True
        ai_payload = [{"dealId": self.deal_id, "suggestedStage": "Negotiation"}]
        with mock.patch("services.crm_insights.call_completion_json", return_value=ai_payload) as completion:
            result = crm_insights.build_pipeline_analysis(self.db, self.business_id, NOW)
        self.assertEqual(result["recommendations"], ai_payload)
        self.assertEqual(completion.call_args.kwargs["temperature"], 0.3)
        self.assertIn("Big Deal", completion.call_args.args[1])

    def test_ai_failure_falls_back(self):
        self.ai_enabled.return_value = True
        with mock.patch("services.crm_insights.call_completion_json", side_effect=AIResponseError("bad json")):
            result = crm_insights.build_activity_recommendations(
                self.db, self.business_id, self.contact_id, self.deal_id, NOW
            )
        self.assertEqual(len(result["recommendations"]), 2)
        self.assertEqual(result["recommendations"][0]["title"], "Follow up with Grace")

    def test_ai_is_skipped_when_there_are_no_rows(self):
        self.ai_enabled.return_value = True
        with mock.patch("services.crm_insights.call_completion_json") as completion:
            result = crm_insights.build_contact_analysis(self.db, "other-business", NOW)
        completion.assert_not_called()
        self.assertEqual(len(result["leadScores"]), 2)

    def test_email_template_without_ai(self):
        draft = crm_insights.build_email_draft(self.db, self.contact_id, self.business_id, context="the demo")
        self.assertEqual(draft["subject"], "Follow-up from Acme Ltd")
        self.assertIn("Hi Grace", draft["body"])
        self.assertIn("the demo", draft["body"])
        self.assertNotIn("cta", draft)

    def test_email_fallback_when_ai_fails(self):
        self.ai_enabled.return_value = True
        with mock.patch("services.crm_insights.call_completion_json", side_effect=AIResponseError("timeout")):
            draft = crm_insights.build_email_draft(self.db, self.contact_id, self.business_id, "follow_up")
        self.assertEqual(draft["cta"], "Schedule a call")
        self.assertEqual(draft["subject"], "Follow-up from Acme Ltd")

    def test_email_uses_ai_draft(self):
        self.ai_enabled.return_value = True
        ai_draft = {"subject": "Hello", "body": "Hi", "tone": "friendly", "cta": "Reply"}
        with mock.patch("services.crm_insights.call_completion_json", return_value=ai_draft) as completion:
            draft = crm_insights.build_email_draft(self.db, self.contact_id, self.business_id, "cold_outreach")
        self.assertEqual(draft, ai_draft)
        self.assertEqual(completion.call_args.kwargs["temperature"], 0.7)
        self.assertIn("friendly but professional", completion.call_args.args[1])


if __name__ == "__main__":
    unittest.main()
